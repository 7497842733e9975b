import voidstrap

if __name__ == '__main__':
	voidstrap.run_as_a_module()
